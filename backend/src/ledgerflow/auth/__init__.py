"""Bearer-token boundary: LedgerFlow only decodes tokens issued elsewhere."""
