from typing import List

from fastapi import APIRouter, Depends

from medintake.schemas.models import MedicationCreate, MedicationRecord
from medintake.services.medication_store import (
    MedicationStore,
    build_medication_record,
    get_medication_store,
)

router = APIRouter(prefix="/medications", tags=["medications"])

@router.get("", response_model=List[MedicationRecord])
def list_medications(owner_id: str, meds: MedicationStore = Depends(get_medication_store)):
    return meds.list_medications(owner_id)

@router.post("", response_model=MedicationRecord)
def add_medication(req: MedicationCreate, meds: MedicationStore = Depends(get_medication_store)):
    return meds.insert_medication(build_medication_record(req, req.owner_id))
