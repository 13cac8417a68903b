# Import every model so Base.metadata and string relationships resolve.
from .users import User, UserRole
from .teachers import Teacher, TeacherWorkload
from .students import Group, Student, Parent
from .study_plans import StudyPlan, ScheduleEntry
from .lessons import Lesson, LessonResult, LESSON_TYPE_CONTROL_WORK, LESSON_TYPE_REGULAR
from .feedback import FeedbackTemplate, FeedbackResponse

__all__ = [
    "User", "UserRole",
    "Teacher", "TeacherWorkload",
    "Group", "Student", "Parent",
    "StudyPlan", "ScheduleEntry",
    "Lesson", "LessonResult", "LESSON_TYPE_CONTROL_WORK", "LESSON_TYPE_REGULAR",
    "FeedbackTemplate", "FeedbackResponse",
]
