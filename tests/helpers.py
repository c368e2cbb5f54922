def chain_record(doc: dict) -> dict:
    return doc["macros"]["arch.AegisubChain"]


def chain_channel(doc: dict) -> dict:
    return chain_record(doc)["channels"]["release"]


def issue_codes(report, severity=None) -> set:
    return {i.code for i in report.issues if severity is None or i.severity == severity}
