from termfees.core.documents.number_generator import DocumentNumberGenerator, get_document_number

__all__ = ["DocumentNumberGenerator", "get_document_number"]
