"""
User administration: role, active flag and organization membership changes.
"""
