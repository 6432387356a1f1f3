"""Tests for templated node naming."""

from datetime import datetime

from promptcascade.ordering.naming import (
    DEFAULT_NAME,
    LevelTemplate,
    NamingConfig,
    NamingResolver,
    format_date,
    number_to_alpha,
    render_template,
)

NOW = datetime(2024, 3, 5, 14, 7, 9)


def test_number_to_alpha():
    assert number_to_alpha(0) == "A"
    assert number_to_alpha(25) == "Z"
    assert number_to_alpha(26) == "AA"
    assert number_to_alpha(27) == "AB"
    assert number_to_alpha(2, uppercase=False) == "c"


class TestRenderTemplate:
    def test_sequence_is_one_based_and_padded(self):
        assert render_template("Section {{n}}", 4, NOW) == "Section 5"
        assert render_template("Section {{nn}}", 0, NOW) == "Section 01"
        assert render_template("{{nnn}}", 41, NOW) == "042"

    def test_letters(self):
        assert render_template("Part {{A}}", 2, NOW) == "Part C"
        assert render_template("part {{a}}", 0, NOW) == "part a"

    def test_dates(self):
        assert render_template("{{date:yyyy-MM-dd}}", 0, NOW) == "2024-03-05"
        assert render_template("{{date:MMM d, yyyy}}", 0, NOW) == "Mar 5, 2024"
        assert render_template("{{date:HH:mm}}", 0, NOW) == "14:07"

    def test_unsupported_date_token_is_left_alone(self):
        assert render_template("{{date:Q}}", 0, NOW) == "{{date:Q}}"

    def test_unknown_placeholder_stays_literal(self):
        assert render_template("{{foo}} {{n}}", 0, NOW) == "{{foo}} 1"
        assert render_template("{{ n }}-{{x.y}}", 2, NOW) == "{{ n }}-{{x.y}}"

    def test_parent_and_top_only_when_known(self):
        assert render_template("{{parent}} / {{n}}", 0, NOW) == "{{parent}} / 1"
        rendered = render_template("{{top}}: {{parent}}", 0, NOW, "Intro", "Report")
        assert rendered == "Report: Intro"


def test_format_date_quoted_literal():
    assert format_date(NOW, "d 'of' MMMM") == "5 of March"


class TestNamingConfig:
    def test_levels_clamp_to_last(self):
        config = NamingConfig(
            levels=[LevelTemplate(name="Chapter {{n}}"), LevelTemplate(name="Section {{n}}")]
        )
        assert config.template_for_level(0).name == "Chapter {{n}}"
        assert config.template_for_level(5).name == "Section {{n}}"

    def test_default_template_without_levels(self):
        assert NamingConfig().template_for_level(3).name == DEFAULT_NAME

    def test_top_level_set_overrides_levels(self):
        config = NamingConfig.model_validate(
            {
                "levels": [{"name": "Default {{n}}"}],
                "topLevelSets": {"Campaign": {"levels": [{"name": "Ad {{A}}"}]}},
            }
        )
        assert config.template_for_level(0, "Campaign").name == "Ad {{A}}"
        assert config.template_for_level(0, "Other").name == "Default {{n}}"


class TestNamingResolver:
    def test_prefix_name_suffix(self):
        config = NamingConfig(
            levels=[LevelTemplate(prefix="Q{{n}} ", name="{{date:yyyy}}", suffix=" draft")]
        )
        resolver = NamingResolver(config, clock=lambda: NOW)
        assert resolver.resolve(resolver.level_config(0), 0) == "Q1 2024 draft"

    def test_empty_result_falls_back(self):
        config = NamingConfig(levels=[LevelTemplate(name="")])
        resolver = NamingResolver(config, clock=lambda: NOW)
        assert resolver.resolve(resolver.level_config(0), 3) == DEFAULT_NAME

    def test_parent_name_flows_through_level_config(self):
        config = NamingConfig(levels=[LevelTemplate(name="{{parent}} {{n}}")])
        resolver = NamingResolver(config, clock=lambda: NOW)
        level = resolver.level_config(1, parent_name="Overview")
        assert resolver.resolve(level, 1) == "Overview 2"

    def test_same_inputs_give_same_name(self):
        config = NamingConfig(
            levels=[LevelTemplate(prefix="{{A}}. ", name="Item {{nn}} {{date:yyyy-MM-dd}}")]
        )
        level = NamingResolver(config).level_config(0)
        names = {NamingResolver(config).resolve(level, 4, NOW) for _ in range(3)}
        assert names == {"E. Item 05 2024-03-05"}

    def test_render_strips(self):
        resolver = NamingResolver(clock=lambda: NOW)
        assert resolver.render("  Item {{n}}  ", 0) == "Item 1"
