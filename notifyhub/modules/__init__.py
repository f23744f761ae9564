"""Domain modules.

- template: Template rendering, validation and variable extraction
- audience: Audience validation and directory-backed resolution
- notification: Channel adapters, dispatch coordination and scheduling
"""
