from sqlmodel import SQLModel, create_engine, Session
from .config import DATABASE_URL, DATABASE_ECHO


connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# Create the database engine
engine = create_engine(DATABASE_URL, echo=DATABASE_ECHO, connect_args=connect_args)

# Function to get a database session
async def get_session():
    session = Session(engine, autoflush=False, autocommit=False)
    try:
        yield session
    finally:
        session.close()


# Function to create tables
def init_db():
    SQLModel.metadata.create_all(engine)
