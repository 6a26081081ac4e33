from termfees.modules.terms.models import AcademicTerm, GradeFeeTemplate, TermStatus

__all__ = ["AcademicTerm", "GradeFeeTemplate", "TermStatus"]
