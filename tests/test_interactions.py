from dosetrack.core.interactions import classify_pair, evaluate_interactions


def test_rule_table():
    assert classify_pair("Benzodiazepines", "Opioids") == "high"
    assert classify_pair("Benzodiazepines", "Benzodiazepines") == "high"
    assert classify_pair("Stimulants", "Stimulants") == "medium"
    assert classify_pair("Stimulants", "Benzodiazepines") == "low"
    assert classify_pair("Custom", "Custom") == "low"


def test_categories_are_normalised():
    assert classify_pair("benzodiazepiner", "OPIOIDER") == "high"
    assert classify_pair("sentralstimulerende", "Stimulants") == "medium"


def test_rule_table_is_directional():
    assert classify_pair("Opioids", "Benzodiazepines") == "low"


def test_excludes_current_and_sorts_by_severity(make_substance):
    xanax = make_substance(name="Xanax", category="Benzodiazepines")
    coffee = make_substance(name="Coffee", category="Stimulants")
    oxy = make_substance(name="Oxycodone", category="Opioids")
    valium = make_substance(name="Valium", category="Benzodiazepiner")

    results = evaluate_interactions(xanax, [xanax, coffee, oxy, valium])
    assert [r.substance_name for r in results] == ["Oxycodone", "Valium", "Coffee"]
    assert [r.severity for r in results] == ["high", "high", "low"]
    assert all(r.substance_id != xanax.id for r in results)


def test_description_names_both_substances(make_substance):
    speed = make_substance(name="Speed", category="Stimulants")
    coke = make_substance(name="Coke", category="Stimulants")
    [result] = evaluate_interactions(speed, [coke])
    assert result.severity == "medium"
    assert "Speed" in result.description and "Coke" in result.description


def test_low_results_are_included(make_substance):
    a = make_substance(name="A")
    b = make_substance(name="B")
    [result] = evaluate_interactions(a, [a, b])
    assert result.severity == "low"
    assert "not a clinical" in result.description


def test_nothing_else_tracked(make_substance):
    a = make_substance(name="A")
    assert evaluate_interactions(a, [a]) == []
