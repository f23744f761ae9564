"""NotifyHub multi-channel notification dispatch engine.

Modules:
    - core: Configuration, database, Celery and logging setup
    - modules.template: Template language rendering and validation
    - modules.audience: Audience descriptors and recipient resolution
    - modules.notification: Channel adapters and the dispatch coordinator
"""

__version__ = "0.1.0"
