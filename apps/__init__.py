from apps import api

from apps.api import ServiceContainer, app, create_app

__all__ = ['ServiceContainer', 'api', 'app', 'create_app']
