from apps.api import container
from apps.api import main

from apps.api.container import ServiceContainer
from apps.api.main import app, create_app

__all__ = ['ServiceContainer', 'app', 'container', 'create_app', 'main']
