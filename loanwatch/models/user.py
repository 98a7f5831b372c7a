from sqlalchemy import Column, String, DateTime
from loanwatch.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    display_name = Column(String(200))
    email = Column(String(200))
    created_at = Column(DateTime)

    def __repr__(self):
        return f"<User {self.id} email={self.email}>"
