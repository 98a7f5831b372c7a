# LoanWatch — Database Models
# Import all models here for SQLAlchemy discovery

from loanwatch.models.loan import Loan                        # noqa
from loanwatch.models.reservation import Reservation          # noqa
from loanwatch.models.equipment import Equipment              # noqa
from loanwatch.models.user import User                        # noqa
from loanwatch.models.alert import Alert, AlertAuditLog        # noqa
from loanwatch.models.no_show import UserNoShowOccurrence      # noqa
from loanwatch.models.report import ScheduledReport            # noqa
