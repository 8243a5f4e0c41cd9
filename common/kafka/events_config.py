from common.events.integration_events import (
    IntegrationEvent,
    OrderCreatedEvent,
    PaymentProcessedEvent,
    StockFailedEvent,
    StockReservedEvent,
)

# ------------------------------------------
# Event types (value of the "event-type" header)
# ------------------------------------------
EVENT_ORDER_CREATED             = OrderCreatedEvent.__name__      # Order service accepted a new order
EVENT_PAYMENT_PROCESSED         = PaymentProcessedEvent.__name__  # Payment service finished a payment attempt
EVENT_STOCK_RESERVED            = StockReservedEvent.__name__     # Inventory service reserved every item of an order
EVENT_STOCK_FAILED              = StockFailedEvent.__name__       # Inventory service could not reserve an order

EVENT_TYPES: dict[str, type[IntegrationEvent]] = {
    EVENT_ORDER_CREATED: OrderCreatedEvent,
    EVENT_PAYMENT_PROCESSED: PaymentProcessedEvent,
    EVENT_STOCK_RESERVED: StockReservedEvent,
    EVENT_STOCK_FAILED: StockFailedEvent,
}

# ------------------------------------------
# Message headers
# ------------------------------------------
HEADER_EVENT_TYPE               = "event-type"
HEADER_CORRELATION_ID           = "correlation-id"
HEADER_DEAD_LETTER_REASON       = "dead-letter-reason"   # "malformed-message" or "handler-error"
HEADER_DEAD_LETTER_ERROR        = "dead-letter-error"    # str() of the error
HEADER_DEAD_LETTER_SOURCE       = "dead-letter-source"   # "<topic>:<partition>:<offset>"

DEAD_LETTER_MALFORMED           = "malformed-message"
DEAD_LETTER_HANDLER_ERROR       = "handler-error"
