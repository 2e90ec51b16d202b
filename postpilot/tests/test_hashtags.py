from postpilot.services.hashtags import build_caption, detect_category, format_hashtags, suggest_hashtags

def test_detect_category_from_keywords():
    assert detect_category("Fresh recipe from our restaurant kitchen") == "food"
    assert detect_category("Morning workout at the gym") == "fitness"
    assert detect_category("Just a regular day") is None

def test_suggestions_are_ranked_and_capped():
    result = suggest_hashtags("Our delicious new recipe is ready")
    assert result["category"] == "food"
    tags = [s["tag"] for s in result["suggestions"]]
    assert tags[:5] == ["foodie", "delicious", "yum", "cooking", "recipe"]
    relevances = [s["relevance"] for s in result["suggestions"]]
    assert relevances == sorted(relevances, reverse=True)
    assert len(result["suggestions"]) <= 20
    assert {"tag": "Ready", "category": "food", "relevance": 70} in result["suggestions"]

def test_existing_hashtags_are_dropped_case_insensitively():
    result = suggest_hashtags("Delicious recipe", existing=["#Foodie", "YUM"])
    tags = {s["tag"].lower() for s in result["suggestions"]}
    assert "foodie" not in tags
    assert "yum" not in tags

def test_caption_words_do_not_duplicate_category_tags():
    result = suggest_hashtags("delicious recipe")
    tags = [s["tag"].lower() for s in result["suggestions"]]
    assert len(tags) == len(set(tags))

def test_explicit_category_wins_and_unknown_falls_back():
    assert suggest_hashtags("gym day", category="travel")["category"] == "travel"
    assert suggest_hashtags("nothing matching here", category="bogus")["category"] == "general"

def test_caption_building():
    assert format_hashtags(["sale", "#Summer"]) == "#sale #Summer"
    assert build_caption("Big sale", ["sale"]) == "Big sale\n\n#sale"
    assert build_caption("", ["sale"]) == "#sale"
    assert build_caption("Just text", []) == "Just text"
