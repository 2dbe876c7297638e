import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/orderhub_db")

# Application Metadata
PROJECT_NAME = "OrderHub Order Lifecycle Service"
VERSION = "1.0.0"

# Bearer credentials are issued by the identity service; we only verify them
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Live push configuration
WS_SEND_TIMEOUT = float(os.getenv("WS_SEND_TIMEOUT", 5)) # Seconds before a slow channel is dropped
WS_POLICY_VIOLATION = 1008 # Close code for rejected handshakes
