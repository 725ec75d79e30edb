"""Process exit codes for matchdb commands."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
FIELD_ERROR = 4
NOT_FOUND = 5
