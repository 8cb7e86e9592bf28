from tireledger.core.config import settings
from tireledger.core.database import get_db, Base
from tireledger.core.security import create_access_token, decode_token
