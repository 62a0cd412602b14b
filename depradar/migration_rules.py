# depradar/migration_rules.py
# Known major-version upgrade paths and the source patterns they break.
from types import MappingProxyType

from .models import MIGRATION_SEVERITIES, MigrationPattern, MigrationRule

SCRIPT_EXTS = (".ts", ".js")
COMPONENT_EXTS = (".tsx", ".jsx", ".ts", ".js")

MIGRATION_RULES = (
    MigrationRule(
        framework="svelte",
        from_major=4,
        to_major=5,
        guide_url="https://svelte.dev/docs/svelte/v5-migration-guide",
        patterns=(
            MigrationPattern(r"export\s+let\s+", (".svelte",), "breaking",
                             "`export let` props are replaced by `$props()` rune",
                             "Use `let { prop } = $props()` instead"),
            MigrationPattern(r"\$:\s+", (".svelte",), "breaking",
                             "Reactive `$:` statements replaced by `$derived()` and `$effect()`",
                             "Use `const x = $derived(...)` for derivations, `$effect(() => {...})` for side effects"),
            MigrationPattern(r"createEventDispatcher", (".svelte",) + SCRIPT_EXTS, "breaking",
                             "`createEventDispatcher` replaced by callback props",
                             "Pass callback functions as props instead"),
            MigrationPattern(r"on:click|on:submit|on:change|on:input|on:keydown", (".svelte",), "breaking",
                             "`on:event` syntax replaced by `onevent` props",
                             "Use `onclick`, `onsubmit`, `onchange` etc."),
            MigrationPattern(r"<slot\s*/?>|<slot\s+name=", (".svelte",), "breaking",
                             "`<slot>` replaced by `{@render}` blocks and `{#snippet}`",
                             "Use `{@render children()}` and `{#snippet name()}...{/snippet}`"),
            MigrationPattern(r"svelte-preprocess", SCRIPT_EXTS + (".json",), "deprecated",
                             "`svelte-preprocess` not needed with Svelte 5",
                             "Remove from config, Svelte 5 handles preprocessing natively"),
            MigrationPattern(r"afterUpdate|beforeUpdate", (".svelte",) + SCRIPT_EXTS, "breaking",
                             "`beforeUpdate/afterUpdate` lifecycle hooks removed",
                             "Use `$effect.pre()` for beforeUpdate, `$effect()` for afterUpdate"),
            MigrationPattern(r"\$\$props|\$\$restProps", (".svelte",), "breaking",
                             "`$$props` and `$$restProps` replaced",
                             "Use `let { ...rest } = $props()` for rest props"),
        ),
    ),
    MigrationRule(
        framework="next",
        from_major=13,
        to_major=14,
        guide_url="https://nextjs.org/docs/app/building-your-application/upgrading/version-14",
        patterns=(
            MigrationPattern(r"next/image", COMPONENT_EXTS, "recommended",
                             "Check Image component API changes",
                             "Review `next/image` props for v14 changes"),
        ),
    ),
    MigrationRule(
        framework="next",
        from_major=14,
        to_major=15,
        guide_url="https://nextjs.org/docs/app/building-your-application/upgrading/version-15",
        patterns=(
            MigrationPattern(r"getServerSideProps|getStaticProps", COMPONENT_EXTS, "deprecated",
                             "Pages Router data fetching is legacy",
                             "Migrate to App Router with server components"),
        ),
    ),
    MigrationRule(
        framework="react",
        from_major=18,
        to_major=19,
        guide_url="https://react.dev/blog/2024/04/25/react-19-upgrade-guide",
        patterns=(
            MigrationPattern(r"ReactDOM\.render\(|ReactDOM\.hydrate\(", COMPONENT_EXTS, "breaking",
                             "`ReactDOM.render` and `ReactDOM.hydrate` were removed",
                             "Use `createRoot(el).render(...)` or `hydrateRoot(el, ...)` from `react-dom/client`"),
            MigrationPattern(r"\.propTypes\s*=", COMPONENT_EXTS, "deprecated",
                             "`propTypes` checks are silently ignored",
                             "Move to TypeScript or another type-checking solution"),
            MigrationPattern(r"ref=\"[^\"]+\"|ref='[^']+'", (".tsx", ".jsx"), "breaking",
                             "String refs were removed",
                             "Use callback refs or `useRef`"),
            MigrationPattern(r"react-test-renderer", COMPONENT_EXTS + (".json",), "deprecated",
                             "`react-test-renderer` is deprecated",
                             "Use `@testing-library/react` instead"),
        ),
    ),
    MigrationRule(
        framework="tailwindcss",
        from_major=3,
        to_major=4,
        guide_url="https://tailwindcss.com/docs/upgrade-guide",
        patterns=(
            MigrationPattern(r"@tailwind\s+(base|components|utilities)", (".css", ".scss", ".pcss"), "breaking",
                             "`@tailwind` directives were removed",
                             "Replace them with `@import \"tailwindcss\";`"),
            MigrationPattern(r"\bshadow-sm\b|\brounded-sm\b|\bblur-sm\b", (".svelte", ".html", ".vue") + COMPONENT_EXTS,
                             "recommended",
                             "Small shadow/radius/blur utilities were renamed one step down the scale",
                             "Rename `shadow-sm` to `shadow-xs`, `rounded-sm` to `rounded-xs`, `blur-sm` to `blur-xs`"),
        ),
    ),
)


def _build_registry(rules) -> MappingProxyType:
    registry = {}
    for rule in rules:
        key = (rule.framework, rule.from_major)
        if key in registry:
            raise ValueError(f"Duplicate migration rule for {key}")
        for pattern in rule.patterns:
            if pattern.severity not in MIGRATION_SEVERITIES:
                raise ValueError(f"Unknown severity '{pattern.severity}' in migration rule for {key}")
        registry[key] = rule
    return MappingProxyType(registry)


# (framework, from_major) -> MigrationRule, built once at import
RULE_REGISTRY = _build_registry(MIGRATION_RULES)


def get_rule(framework: str, from_major: int) -> MigrationRule | None:
    return RULE_REGISTRY.get((framework, from_major))
