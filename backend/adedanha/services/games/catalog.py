import re

CATEGORIES = [
    {'id': 'nome', 'name': 'Nome'},
    {'id': 'cor', 'name': 'Cor'},
    {'id': 'fruta', 'name': 'Fruta'},
    {'id': 'animal', 'name': 'Animal'},
    {'id': 'carro', 'name': 'Carro'},
    {'id': 'lugar', 'name': 'Lugar'},
    {'id': 'objeto', 'name': 'Objeto'},
    {'id': 'cep', 'name': 'CEP'},
    {'id': 'profissao', 'name': 'Profissão'},
]

DEFAULT_SELECTION = ['nome', 'cor', 'fruta', 'animal', 'lugar']

_CATALOG_NAMES = {c['id']: c['name'] for c in CATEGORIES}


def category_id(label) -> str:
    """Id for a catalog entry or an ad hoc category typed by the host."""
    if not isinstance(label, str):
        return ''
    return re.sub(r'\s+', '-', label.strip().lower())


def category_name(cid: str) -> str:
    return _CATALOG_NAMES.get(cid, cid)


def normalize_selection(labels) -> list:
    """Category ids in the order given, blanks and repeats dropped."""
    selection = []
    for label in labels or []:
        cid = category_id(label)
        if cid and cid not in selection:
            selection.append(cid)
    return selection
