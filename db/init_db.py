# python -m db.init_db
import logging

from db.database import Base, engine
from db.models.users import User  # noqa: F401
from db.models.questions import Question  # noqa: F401
from db.models.assessments import Assessment  # noqa: F401
from db.models.assessment_questions import AssessmentQuestion  # noqa: F401
from db.models.student_attempts import StudentAttempt  # noqa: F401
from db.models.student_answers import StudentAnswer  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind=engine):
    logger.info("Creating tables...")
    Base.metadata.create_all(bind=bind)
    logger.info("Done")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
