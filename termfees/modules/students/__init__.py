from termfees.modules.students.models import Student, StudentStatus, TransportMode

__all__ = ["Student", "StudentStatus", "TransportMode"]
