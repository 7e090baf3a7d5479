"""Services for rabbitMQ."""
