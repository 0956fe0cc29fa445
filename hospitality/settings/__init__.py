# hospitality/settings/__init__.py

import os

settings_module = os.getenv('DJANGO_SETTINGS_MODULE', 'hospitality.settings.local')

if settings_module.endswith('.cloud'):
    from .cloud import *
elif settings_module.endswith(('.local', '.settings')):
    from .local import *
