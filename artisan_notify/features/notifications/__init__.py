"""Multi-channel notification delivery.

Sends transactional messages over the rich channel (pre-approved templates)
with rule-driven fallback to the plain channel, under per-channel rate
limits and bounded retries, and tracks delivery through inbound status
callbacks.

Architecture:
    - errors: Classifier mapping gateway failures to code, category and retry action
    - retry: Bounded exponential backoff around one gateway call
    - fallback: Declarative rules deciding when to switch channel
    - tracker: Delivery records merged monotonically from status callbacks
    - dispatcher: Orchestrates validation, rate limiting, retry and fallback
    - service: NotificationEngine composition root and retention sweeper
    - channels: httpx gateway client

Example:
    ```python
    engine = NotificationEngine.from_settings(
        get_notification_settings(), get_gateway_settings(),
    )
    result = await engine.dispatcher.send(
        NotificationRequest(
            to="+919876543210",
            template_name="order_shipped",
            template_params={"order_id": "A-1001"},
            message="Your order A-1001 has shipped",
        ),
    )
    ```
"""
