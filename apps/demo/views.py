from django.conf import settings
from django.shortcuts import render

from apps.csp.policy import Environment, PolicyMode


def demo_view(request):
    mode = PolicyMode.parse(getattr(settings, 'CSP_MODE', None))
    environment = Environment.parse(getattr(settings, 'ENVIRONMENT', None))
    return render(request, 'demo/index.html', {
        'csp_mode': mode.value,
        'environment': environment.value,
        'is_secure': mode is PolicyMode.SECURE,
    })
