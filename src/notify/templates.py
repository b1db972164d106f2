# src/notify/templates.py - v1
"""Jinja2 email templates, one HTML and one text body per event kind."""

from __future__ import annotations

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

from bulkdoc.notify.formatting import format_duration, format_file_size

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ subject }}</title></head>
<body style="font-family: Arial, sans-serif; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>{{ app_name }}</h2>
    {% block content %}{% endblock %}
    <p style="font-size: 12px; color: #888;">Batch {{ summary.batch_id }}</p>
  </div>
</body>
</html>
"""

_TEMPLATES: dict[str, str] = {
    "layout.html": _LAYOUT,
    "batch_completed.html": """{% extends "layout.html" %}
{% block content %}
<p>Hello{% if recipient_name %} {{ recipient_name }}{% endif %},</p>
<p>Your documents are ready: {{ summary.totals.completed }} of {{ summary.totals.total }}
generated{% if summary.totals.failed %}, {{ summary.totals.failed }} failed{% endif %}.</p>
{% if duration %}<p>Processing time: {{ duration | duration }}</p>{% endif %}
<ul>
{% for link in event.download_links %}
  <li><a href="{{ link.url }}">{{ link.file_name }}</a>{% if link.size %} ({{ link.size | filesize }}){% endif %}</li>
{% endfor %}
</ul>
{% endblock %}
""",
    "batch_completed.txt": """Hello{% if recipient_name %} {{ recipient_name }}{% endif %},

Your documents are ready: {{ summary.totals.completed }} of {{ summary.totals.total }} generated{% if summary.totals.failed %}, {{ summary.totals.failed }} failed{% endif %}.
{% if duration %}Processing time: {{ duration | duration }}
{% endif %}
{% for link in event.download_links %}Download {{ link.file_name }}: {{ link.url }}
{% endfor %}
Batch {{ summary.batch_id }}
""",
    "batch_failed.html": """{% extends "layout.html" %}
{% block content %}
<p>Hello{% if recipient_name %} {{ recipient_name }}{% endif %},</p>
<p>Document generation failed ({{ event.error_count }} error{{ "s" if event.error_count != 1 else "" }}).</p>
<ul>
{% for error in event.error_summary %}  <li>{{ error }}</li>
{% endfor %}
</ul>
{% if support_email %}<p>Need help? Contact {{ support_email }}.</p>{% endif %}
{% endblock %}
""",
    "batch_failed.txt": """Hello{% if recipient_name %} {{ recipient_name }}{% endif %},

Document generation failed ({{ event.error_count }} error{{ "s" if event.error_count != 1 else "" }}).
{% for error in event.error_summary %}- {{ error }}
{% endfor %}{% if support_email %}
Need help? Contact {{ support_email }}.
{% endif %}
Batch {{ summary.batch_id }}
""",
    "batch_progress.html": """{% extends "layout.html" %}
{% block content %}
<p>Your batch is {{ summary.progress }}% done
({{ summary.totals.completed + summary.totals.failed }} of {{ summary.totals.total }} documents).</p>
<p>Estimated time remaining: {{ event.estimated_remaining_s | duration }}</p>
{% endblock %}
""",
    "batch_progress.txt": """Your batch is {{ summary.progress }}% done ({{ summary.totals.completed + summary.totals.failed }} of {{ summary.totals.total }} documents).
Estimated time remaining: {{ event.estimated_remaining_s | duration }}

Batch {{ summary.batch_id }}
""",
}

SUBJECTS: dict[str, str] = {
    "batch_completed": "Your documents are ready - Batch {batch_id}",
    "batch_failed": "Document generation failed - Batch {batch_id}",
    "batch_progress": "Document generation progress - Batch {batch_id}",
}


def create_environment() -> Environment:
    env = Environment(
        loader=DictLoader(_TEMPLATES),
        autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
        undefined=StrictUndefined,
        trim_blocks=True,
    )
    env.filters["duration"] = format_duration
    env.filters["filesize"] = format_file_size
    return env
