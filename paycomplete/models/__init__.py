from paycomplete.models.processed_reference import ProcessedReference
