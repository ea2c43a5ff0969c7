"""Default configuration document, written when no config file exists."""

DEFAULT_CONFIG_TOML = """\
# WebSync Station configuration
#
# Edit this file and restart the station. Times are UTC.

# ---------------------------------------------------------------------------
# Auth for backup, restore and webhook requests
# ---------------------------------------------------------------------------

# Bearer token sent as-is. Leave empty to mint a JWT with the secret below.
token = ""

# HS256 secret. When set, a fresh JWT is minted for every request.
secret = "a-string-secret-at-least-256-bits-long"

# JWT lifetime in seconds. iat and exp are always added to the payload.
jwt_expiry = 600

# Extra claims for the JWT
[payload]
sub = "1234567890"
name = "John Doe"
admin = true

# ---------------------------------------------------------------------------
# Backups
#
#   description  unique name, also the directory the files are stored in
#   url          GET route that returns one file
#   restore      POST route that accepts one file (multipart, field "file")
#   max          number of files kept before the oldest is deleted
#   interval     h / d / w / m  (hourly, daily, weekly, monthly = 30 days)
#   time         minute of the day the backup may start, e.g. 725 = 12:05.
#                For hourly backups only time % 60 is used.
#
# A source can override the auth above with its own [backups.auth] table.
# ---------------------------------------------------------------------------

#[[backups]]
#description = "nightly-db"
#url = "https://your-site.example/backup"
#restore = "https://your-site.example/restore"
#max = 5
#interval = "d"
#time = 120

[schedule]
backups_enabled = true

# ---------------------------------------------------------------------------
# Uptime monitoring
#
#   interval_minutes    minutes between checks of each URL
#   downtime_tolerance  failed checks in a row allowed before a warning
#
# Each [[urls]] entry may override both values.
# ---------------------------------------------------------------------------

[url_uptime_settings]
interval_minutes = 10
downtime_tolerance = 1

#[[urls]]
#description = "Homepage"
#url = "https://www.example.com/"

# ---------------------------------------------------------------------------
# Warnings
#
# send_post_request POSTs {"time", "description", "logs"} as JSON to every
# route, using the auth above as Bearer. use_email sends through [smtp].
# daily_max caps warnings per day across all channels; 0 disables them.
# log_lines is the number of recent log lines attached to each warning.
# ---------------------------------------------------------------------------

[warning_settings]
use_email = false
send_post_request = false
post_request_routes = ["https://your-site.example/central-log"]
email = "alerts@example.com"
daily_max = 4
log_lines = 50

[smtp]
server = "smtp.example.com"
port = 587
username = "alerts@example.com"
password = "app-specific-password"
from = "alerts@example.com"
"""
