import os

ORDERS_TOPIC        = os.environ.get("KAFKA_ORDERS_TOPIC", "shopverse.orders")          # OrderCreatedEvent
PAYMENTS_TOPIC      = os.environ.get("KAFKA_PAYMENTS_TOPIC", "shopverse.payments")      # PaymentProcessedEvent
INVENTORY_TOPIC     = os.environ.get("KAFKA_INVENTORY_TOPIC", "shopverse.inventory")    # StockReservedEvent, StockFailedEvent
DEAD_LETTER_TOPIC   = os.environ.get("KAFKA_DEAD_LETTER_TOPIC", "shopverse.deadletter")
