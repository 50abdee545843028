"""
Organizations responsible for road maintenance.

Organizations form a hierarchy through parent_org_id (e.g. a provincial road
development authority under a national ministry).
"""
