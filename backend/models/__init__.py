from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from models.profile import Profile
from models.student_break import StudentBreak

__all__ = [
	"Attendance",
	"Classroom",
	"Exam",
	"Profile",
	"StudentBreak",
]
