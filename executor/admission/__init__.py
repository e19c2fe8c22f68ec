from executor.admission.controller import AdmissionController, AdmissionSlot

__all__ = ["AdmissionController", "AdmissionSlot"]
