"""
Environment Administration Backend

Provisions ported, filesystem-backed environments cloned from a template
tree, keeps their integration code and credential files in sync, and manages
the access profiles and logins that reach them.
"""

__version__ = "1.0.0"
