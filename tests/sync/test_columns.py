from b2bsync.sync.mapping import collect_columns, template_fields


def test_collects_columns_across_treatments():
    fields = {
        "external_id": "id",
        "name": {"tratamento": "concatenar_campos", "options": {"concatenate": "{first} {last}"}},
        "status": {"field": "situacao", "tratamento": "mapear_valores", "options": {"A": True}},
        "document": {"field": "doc", "tratamento": "limpeza_regex", "options": {"regex": "\\D"}},
        "phones": {"tratamento": "mapear_json", "options": {"map": {"celular": "cel"}}},
        "trade_name": {"tratamento": "usar_um_ou_outro", "options": {"main": "fantasia", "fallback": "razao"}},
        "age": {"tratamento": "diferenca_entre_datas", "options": {"start": "nascimento", "end": "hoje"}},
        "total": {"tratamento": "formula_matematica", "options": {"formula": "{preco} * {qtd}"}},
    }

    assert collect_columns(fields) == sorted(
        [
            "cel",
            "doc",
            "fantasia",
            "first",
            "hoje",
            "id",
            "last",
            "nascimento",
            "preco",
            "qtd",
            "razao",
            "situacao",
        ]
    )


def test_collects_from_several_maps_with_extras():
    columns = collect_columns({"external_id": "id"}, {"sku": "codigo"}, extra=["updated_at", None, "id"])

    assert columns == ["codigo", "id", "updated_at"]


def test_csv_and_template_strings_are_not_columns():
    assert collect_columns({"phones": "fone1,fone2", "external_id": "id"}) == ["id"]


def test_empty_or_unreadable_maps_fall_back_to_select_star():
    assert collect_columns({}) == []
    assert collect_columns({"external_id": ""}, extra=["updated_at"]) == []
    assert collect_columns({"external_id": ["id"]}) == []
    assert collect_columns(["id"]) == []


def test_template_fields_in_order():
    assert template_fields("{b} x { a } {}") == ["b", "a"]
    assert template_fields(None) == []
