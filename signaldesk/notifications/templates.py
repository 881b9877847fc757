"""
Notification templates with `{{ variable }}` substitution.
"""

import html
import logging
import re
import uuid
from datetime import datetime
from typing import Optional, Dict, List, Any

from .errors import TemplateRenderError
from .models import (
    NotificationChannel, NotificationTemplate, TemplateCategory,
    TemplateCreate, TemplateUpdate, RenderedMessage,
)

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def extract_variables(*texts: Optional[str]) -> List[str]:
    """Variable names referenced by the given texts, in first-seen order"""
    seen: List[str] = []
    for text in texts:
        if not text:
            continue
        for name in VARIABLE_PATTERN.findall(text):
            if name not in seen:
                seen.append(name)
    return seen


def render_text(
    text: str,
    variables: Dict[str, Any],
    escape: bool = False,
    template_name: str = "<inline>",
) -> str:
    """Substitute variables, raising TemplateRenderError when any are missing"""
    missing = [name for name in extract_variables(text) if name not in variables]
    if missing:
        raise TemplateRenderError(template_name, missing)

    def _replace(match: re.Match) -> str:
        value = variables[match.group(1)]
        value = "" if value is None else str(value)
        return html.escape(value) if escape else value

    return VARIABLE_PATTERN.sub(_replace, text)


# Built-in templates for signal alerts, one per channel
SYSTEM_TEMPLATES = [
    TemplateCreate(
        name="signal_alert_email",
        type=NotificationChannel.EMAIL,
        category=TemplateCategory.SIGNAL,
        subject="{{signal_type_upper}} signal: {{ticker}} ({{timeframe}})",
        body_text=(
            "A new {{signal_type}} signal was issued for {{ticker}} on the {{timeframe}} chart.\n"
            "Price: {{price}}\n"
            "Time: {{timestamp}}\n"
            "{{note}}"
        ),
        body_html=(
            "<h2>{{signal_type_upper}} signal: {{ticker}}</h2>"
            "<p>Timeframe: {{timeframe}}<br>Price: {{price}}<br>Time: {{timestamp}}</p>"
            "<p>{{note}}</p>"
        ),
        description="Trading signal alert (email)",
    ),
    TemplateCreate(
        name="signal_alert_sms",
        type=NotificationChannel.SMS,
        category=TemplateCategory.SIGNAL,
        body_text="{{signal_type_upper}} {{ticker}} {{timeframe}} @ {{price}}",
        description="Trading signal alert (SMS)",
    ),
    TemplateCreate(
        name="signal_alert_push",
        type=NotificationChannel.PUSH,
        category=TemplateCategory.SIGNAL,
        subject="{{signal_type_upper}} {{ticker}}",
        body_text="{{timeframe}} signal at {{price}}",
        description="Trading signal alert (push)",
    ),
    TemplateCreate(
        name="signal_alert_telegram",
        type=NotificationChannel.TELEGRAM,
        category=TemplateCategory.SIGNAL,
        body_text=(
            "*{{signal_type_upper}} signal: {{ticker}}*\n\n"
            "Timeframe: {{timeframe}}\n"
            "Price: {{price}}\n"
            "_{{timestamp}}_\n"
            "{{note}}"
        ),
        description="Trading signal alert (Telegram)",
    ),
    TemplateCreate(
        name="signal_alert_discord",
        type=NotificationChannel.DISCORD,
        category=TemplateCategory.SIGNAL,
        subject="{{signal_type_upper}} signal: {{ticker}}",
        body_text="{{timeframe}} signal at {{price}} ({{timestamp}})\n{{note}}",
        description="Trading signal alert (Discord)",
    ),
]


class TemplateStore:
    """Stores notification templates and renders them"""

    def __init__(self, seed_system: bool = True):
        self._templates: Dict[str, NotificationTemplate] = {}
        if seed_system:
            for data in SYSTEM_TEMPLATES:
                self.create(data, is_system=True)

    def create(self, data: TemplateCreate, is_system: bool = False) -> NotificationTemplate:
        if self.get_by_name(data.name):
            raise ValueError(f"Template '{data.name}' already exists")

        now = datetime.utcnow()
        template = NotificationTemplate(
            id=str(uuid.uuid4()),
            name=data.name,
            type=data.type,
            category=data.category,
            subject=data.subject,
            body_text=data.body_text,
            body_html=data.body_html,
            variables=extract_variables(data.subject, data.body_text, data.body_html),
            is_system=is_system,
            description=data.description,
            created_at=now,
            updated_at=now,
        )
        self._templates[template.id] = template
        logger.debug(f"Created template {template.name} with variables {template.variables}")
        return template

    def get(self, template_id: str) -> Optional[NotificationTemplate]:
        return self._templates.get(template_id)

    def get_by_name(self, name: str) -> Optional[NotificationTemplate]:
        for template in self._templates.values():
            if template.name == name:
                return template
        return None

    def list(
        self,
        category: Optional[TemplateCategory] = None,
        channel: Optional[NotificationChannel] = None,
    ) -> List[NotificationTemplate]:
        return [
            t for t in self._templates.values()
            if (category is None or t.category == category)
            and (channel is None or t.type == channel)
        ]

    def find(
        self,
        category: TemplateCategory,
        channel: NotificationChannel,
    ) -> Optional[NotificationTemplate]:
        """Active template for a category and channel, user-defined ones first"""
        candidates = [
            t for t in self.list(category, channel) if t.is_active
        ]
        candidates.sort(key=lambda t: (t.is_system, t.created_at))
        return candidates[0] if candidates else None

    def update(self, template_id: str, data: TemplateUpdate) -> Optional[NotificationTemplate]:
        template = self._templates.get(template_id)
        if template is None:
            return None

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(template, key, value)
        template.variables = extract_variables(
            template.subject, template.body_text, template.body_html
        )
        template.updated_at = datetime.utcnow()
        return template

    def delete(self, template_id: str) -> bool:
        template = self._templates.get(template_id)
        if template is None:
            return False
        if template.is_system:
            raise ValueError(f"System template '{template.name}' cannot be deleted")
        del self._templates[template_id]
        return True

    @staticmethod
    def render(template: NotificationTemplate, variables: Dict[str, Any]) -> RenderedMessage:
        """Render subject, text and HTML bodies (HTML values are escaped)"""
        return RenderedMessage(
            subject=render_text(template.subject, variables, template_name=template.name)
            if template.subject else None,
            text=render_text(template.body_text, variables, template_name=template.name),
            html=render_text(template.body_html, variables, escape=True, template_name=template.name)
            if template.body_html else None,
        )
