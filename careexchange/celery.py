import os
from celery import Celery
from django.conf import settings

# Set the default Django settings module for the 'celery' program
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'careexchange.settings')

app = Celery('careexchange')

app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs
app.autodiscover_tasks(lambda: settings.INSTALLED_APPS)

# Notification fan-out is short lived; keep it out of the default queue
app.conf.task_routes = {
    'fhir.tasks.*': {'queue': 'notifications', 'priority': 8},
}

app.conf.task_time_limit = 300
app.conf.task_soft_time_limit = 240
app.conf.result_expires = 3600
