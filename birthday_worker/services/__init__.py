# birthday_worker/services/__init__.py
from .dispatch import DispatchGateway, ConsoleGateway, build_email_gateway, build_sms_gateway
from .template_service import TemplateResolver, interpolate, select_send_template
from .delivery_recorder import DeliveryRecorder
from .admin_notifier import AdminNotifier

__all__ = [
    "DispatchGateway",
    "ConsoleGateway",
    "build_email_gateway",
    "build_sms_gateway",
    "TemplateResolver",
    "interpolate",
    "select_send_template",
    "DeliveryRecorder",
    "AdminNotifier",
]
