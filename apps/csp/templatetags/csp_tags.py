from django import template
from django.utils.html import format_html

register = template.Library()


@register.simple_tag(takes_context=True)
def nonce_attr(context):
    """Render ` nonce="..."` for the current request, or nothing without one."""
    request = context.get('request')
    nonce = getattr(request, 'csp_nonce', '') or context.get('csp_nonce', '')
    if not nonce:
        return ''
    return format_html(' nonce="{}"', nonce)
