"""
callcap/normalizer.py
Rewrites a raw cdr_next.fbasename into the token actually stored in the
SIP/RTP archive indexes.

Brackets are glob metacharacters for tar --wildcards and are stored as '_'.
A leading '-' would be parsed as a flag by the extraction tools, so the
archiver stores it as '*'. Every tool invocation and every fragment filename
must go through normalize_entry_name(), never the raw name.
"""


def normalize_entry_name(raw: str) -> str:
    name = raw.replace('[', '_').replace(']', '_')
    if name.startswith('-'):
        name = '*' + name[1:]
    return name
