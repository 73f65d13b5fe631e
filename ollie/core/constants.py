"""
Timeouts and sizes for server requests.
"""

# Pulls of large models can take a long time
PULL_TIMEOUT = 60 * 60  # 1 hour

LIST_TIMEOUT = 10  # seconds
SHOW_TIMEOUT = 30  # seconds
DELETE_TIMEOUT = 60  # seconds

PULL_ENDPOINT = "/api/pull"
TAGS_ENDPOINT = "/api/tags"
SHOW_ENDPOINT = "/api/show"
DELETE_ENDPOINT = "/api/delete"

CANCELLED_MESSAGE = "Cancelled by user"
NOT_FOUND_MESSAGE = "Pull ID not found"

USER_AGENT = "Ollie/0.1.0"
