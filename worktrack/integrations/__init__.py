"""worktrack.integrations: external service gateway modules.

All outbound HTTP calls go through a gateway in this package, never via
bare `requests` calls in services or blueprints. Every call is:
  - Retried with exponential backoff
  - Bounded by a timeout
  - Logged, with failures reported as a structured result

Current gateways:
  telegram_gateway.TelegramGateway: Telegram Bot API message delivery
"""
