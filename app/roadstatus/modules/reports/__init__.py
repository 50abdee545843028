"""
Damage report lifecycle.

- Status transitions are gated per role by one declarative table
- Every field change is written to the append-only audit log in the same
  transaction as the report update
- The workflow document is merged key by key, never replaced
"""
