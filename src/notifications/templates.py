"""HTML email templates, rendered with Jinja2."""
from __future__ import annotations

from typing import Any, Dict

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError, select_autoescape

from src.config import get_settings

_LAYOUT = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #1f2937; max-width: 600px; margin: 0 auto;">
  <h1 style="font-size: 20px;">{% block title %}MarketPulse{% endblock %}</h1>
  {% block content %}{% endblock %}
  <p style="margin-top: 32px; font-size: 12px; color: #6b7280;">
    <a href="{{ dashboard_url }}/settings/notifications">Manage notification settings</a>
  </p>
</body>
</html>
"""

_ALERT_NOTIFICATION = """\
{% extends "layout" %}
{% block title %}{{ competitor_name }}{% endblock %}
{% block content %}
  <p>{{ message }}</p>
  {% if details.type == "price_change" %}
    <ul>
    {% for u in details.updated %}
      <li>{{ u.item }}: {{ u.old_price }} &rarr; <strong>{{ u.new_price }}</strong>{% if u.reduced %} (reduced){% endif %}</li>
    {% endfor %}
    {% for p in details.added %}
      <li>New: {{ p.item }} at {{ p.price }}</li>
    {% endfor %}
    </ul>
  {% elif details.type == "new_promotion" %}
    <p><strong>{{ details.promotion.title }}</strong></p>
    {% if details.promotion.description %}<p>{{ details.promotion.description }}</p>{% endif %}
    {% if details.promotion.valid_until %}<p>Valid until {{ details.promotion.valid_until }}</p>{% endif %}
  {% elif details.type == "menu_change" %}
    <ul>
    {% for m in details.added %}<li>Added: {{ m.name }}</li>{% endfor %}
    {% for m in details.removed %}<li>Removed: {{ m.name }}</li>{% endfor %}
    </ul>
  {% endif %}
  <p><a href="{{ dashboard_url }}/alerts">View in dashboard</a></p>
{% endblock %}
"""

_WEEKLY_SUMMARY = """\
{% extends "layout" %}
{% block title %}Your week: {{ week_start }} to {{ week_end }}{% endblock %}
{% block content %}
  <p>Hi {{ user_name | default("there", true) }},</p>
  <p>{{ total_alerts }} alerts across {{ competitors | length }} competitors last week.</p>
  <table style="width: 100%; border-collapse: collapse;">
    <tr><th align="left">Competitor</th><th>Prices</th><th>Promotions</th><th>Menu</th><th>Crawls</th></tr>
    {% for c in competitors %}
    <tr>
      <td>{{ c.name }}</td>
      <td align="center">{{ c.price_changes }}</td>
      <td align="center">{{ c.new_promotions }}</td>
      <td align="center">{{ c.menu_changes }}</td>
      <td align="center">{{ c.crawls }}</td>
    </tr>
    {% endfor %}
  </table>
{% endblock %}
"""

_WELCOME = """\
{% extends "layout" %}
{% block title %}Welcome to MarketPulse{% endblock %}
{% block content %}
  <p>Hi {{ user_name | default("there", true) }},</p>
  <p>Add your first competitor and we will start watching their prices, promotions and menu.</p>
  <p><a href="{{ dashboard_url }}/competitors">Add a competitor</a></p>
{% endblock %}
"""

_PASSWORD_RESET = """\
{% extends "layout" %}
{% block title %}Reset your password{% endblock %}
{% block content %}
  <p>Use the link below to choose a new password. It expires in {{ expires_in_minutes | default(60) }} minutes.</p>
  <p><a href="{{ reset_url }}">Reset password</a></p>
{% endblock %}
"""

_TRIAL_REMINDER = """\
{% extends "layout" %}
{% block title %}Your trial ends in {{ days_left }} days{% endblock %}
{% block content %}
  <p>Hi {{ user_name | default("there", true) }},</p>
  <p>Your MarketPulse trial ends on {{ trial_end }}. Pick a plan to keep your competitor alerts running.</p>
  <p><a href="{{ dashboard_url }}/billing">Choose a plan</a></p>
{% endblock %}
"""

TEMPLATES = {
    "layout": _LAYOUT,
    "alert_notification": _ALERT_NOTIFICATION,
    "weekly_summary": _WEEKLY_SUMMARY,
    "welcome_email": _WELCOME,
    "password_reset": _PASSWORD_RESET,
    "trial_reminder": _TRIAL_REMINDER,
}

ALERT_SUBJECTS = {
    "price_change": "💰 Price changes at {competitor}",
    "new_promotion": "🎉 New promotion at {competitor}",
    "menu_change": "🍽️ Menu updates at {competitor}",
}

env = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(default_for_string=True, default=True),
    undefined=StrictUndefined,
)


class TemplateRenderError(Exception):
    """Unknown template or data that does not fit it."""


def render_email_template(template_name: str, data: Dict[str, Any]) -> str:
    if template_name == "layout" or template_name not in TEMPLATES:
        raise TemplateRenderError(f'Template "{template_name}" not found')
    context = {"dashboard_url": get_settings().dashboard_url, **data}
    try:
        return env.get_template(template_name).render(**context)
    except TemplateError as e:
        raise TemplateRenderError(f"{template_name}: {e}") from e


def generate_subject(template_name: str, data: Dict[str, Any]) -> str:
    """Subject line for a queued email."""
    competitor = data.get("competitor_name")
    if template_name == "alert_notification":
        pattern = ALERT_SUBJECTS.get(data.get("alert_type", ""))
        if pattern and competitor:
            return pattern.format(competitor=competitor)
    elif template_name == "weekly_summary":
        return f"Your MarketPulse weekly summary ({data.get('week_start', '')} - {data.get('week_end', '')})"
    elif template_name == "welcome_email":
        return "Welcome to MarketPulse! 🎉"
    elif template_name == "password_reset":
        return "Reset your MarketPulse password"
    elif template_name == "trial_reminder":
        return f"Your trial ends in {data.get('days_left', 'a few')} days"
    return f"Update at {competitor}" if competitor else "MarketPulse Update"
