import os
from dotenv import load_dotenv


load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./teamshare.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"
CREATE_TABLES = os.getenv("CREATE_TABLES", "true").lower() == "true"

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = float(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Team roles ranked for authorization checks
ROLE_HIERARCHY = {
    "owner": 3,
    "admin": 2,
    "member": 1,
    "viewer": 0,
}

# ACL propagation
# Upper bound on staged writes per commit (the document store's batch limit).
ACL_BATCH_SIZE = int(os.getenv("ACL_BATCH_SIZE", "500"))
ACL_MODIFIED_BY = os.getenv("ACL_MODIFIED_BY", "system")

# Nightly reconciliation
ACL_RESYNC_ENABLED = os.getenv("ACL_RESYNC_ENABLED", "true").lower() == "true"
ACL_RESYNC_HOUR = int(os.getenv("ACL_RESYNC_HOUR", "3"))
