from django import template

register = template.Library()

TITLE_MAX_LENGTH = 25


@register.filter
def truncate_title(value):
    if not value:
        return ""
    return value if len(value) <= TITLE_MAX_LENGTH else value[: TITLE_MAX_LENGTH - 1] + "…"
