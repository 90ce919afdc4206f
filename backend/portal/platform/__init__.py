"""Platform concerns shared across the portal: errors, logging, health, join state."""
