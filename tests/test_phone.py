from donorlink.utils.phone import digits_only, phone_variants, phones_match


def test_digits_only():
    assert digits_only("+91 98765-43210") == "919876543210"
    assert digits_only(None) == ""


def test_local_number_variants():
    variants = phone_variants("98765 43210", country_code="91")
    assert variants[0] == "98765 43210"
    assert "9876543210" in variants
    assert "+919876543210" in variants
    assert "+9876543210" in variants


def test_international_number_yields_local_form():
    variants = phone_variants("+919876543210", country_code="91")
    assert "919876543210" in variants
    assert "9876543210" in variants
    assert len(variants) == len(set(variants))


def test_blank_number_has_no_variants():
    assert phone_variants("") == []
    assert phone_variants("   ") == []
    assert phone_variants(None) == []


def test_phones_match_across_formats():
    assert phones_match("+91 98765 43210", "9876543210", country_code="91")
    assert phones_match("9876543210", "919876543210", country_code="91")
    assert not phones_match("9876543210", "9876543211", country_code="91")
    assert not phones_match(None, "9876543210")
