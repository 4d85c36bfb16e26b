from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()

# In-memory rate limiter (sufficient for single-instance deployments).
# Storage and the on/off switch come from RATELIMIT_* config keys.
limiter = Limiter(get_remote_address)
