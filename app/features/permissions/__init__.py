"""
Permission management feature module.

Implements role-based access control: a permission catalogue, roles
bundling permissions, and temporal role assignments to users.
"""
