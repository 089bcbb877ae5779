"""
Statistical analysis of a user's posts.

Every function here is pure and deterministic.  Callers pass posts already
sorted by ``(created_at, post_id)``; aggregate results never depend on
input order, and ties are broken by name so equal inputs produce equal
profiles.
"""

from __future__ import annotations

import re
import statistics
from collections import Counter, defaultdict
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from voice_dna.ingest.extractor import clean_caption
from voice_dna.models import MediaType, Post
from voice_dna.profile.models import (
    BehavioralDNA,
    CaptionTemplate,
    ColorIdentity,
    CompositionStyle,
    ContentMix,
    ContentPillar,
    CoreIdentity,
    GenerationTemplates,
    HashtagPattern,
    HashtagSet,
    StrategyDNA,
    StructureTemplates,
    StyleShift,
    UniqueSignature,
    VisualDNA,
    VisualGuidelines,
    VisualNarrative,
    WinningCombination,
    WritingDNA,
)

WORD_RE = re.compile(r"[^\W\d_][\w'\u0900-\u097F]*")
SENTENCE_SPLIT_RE = re.compile(r"[.!?\u2026]+|\n+")
EMOJI_RE = re.compile(r"[\U0001F300-\U0001FAFF\u2600-\u27BF]")

# ---------------------------------------------------------------------------
# Tone lexicon: tone -> cue words
# ---------------------------------------------------------------------------
TONE_LEXICON: Dict[str, frozenset] = {
    "enthusiastic": frozenset({
        "amazing", "awesome", "excited", "exciting", "incredible", "love",
        "thrilled", "wow", "fantastic", "best", "obsessed", "finally",
    }),
    "inspirational": frozenset({
        "dream", "dreams", "believe", "journey", "inspire", "inspired",
        "growth", "grow", "purpose", "achieve", "goals", "possible",
    }),
    "professional": frozenset({
        "strategy", "business", "results", "team", "client", "clients",
        "insights", "data", "industry", "launch", "product", "announce",
    }),
    "humorous": frozenset({
        "lol", "haha", "funny", "joke", "lmao", "hilarious", "oops", "meme",
    }),
    "casual": frozenset({
        "just", "gonna", "kinda", "hey", "yeah", "tbh", "vibes", "chill",
    }),
    "reflective": frozenset({
        "learned", "lesson", "lessons", "realize", "realized", "reflect",
        "grateful", "thankful", "remember", "honestly",
    }),
}

NEUTRAL_TONE = "neutral"

TONE_TRAITS: Dict[str, str] = {
    "enthusiastic": "energetic",
    "inspirational": "motivating",
    "professional": "credible",
    "humorous": "playful",
    "casual": "approachable",
    "reflective": "thoughtful",
    NEUTRAL_TONE: "measured",
}

CTA_PHRASES: Tuple[str, ...] = (
    "link in bio", "comment below", "let me know", "tag a friend",
    "save this", "share this", "follow for more", "dm me", "sign up",
    "shop now",
)

STOPWORDS = frozenset("""
a about above after again all also am an and any are as at be because been
before being below between both but by can could did do does doing down
during each few for from further had has have having he her here hers him
his how i if in into is it its itself just me more most my no nor not now
of off on once only or other our ours out over own same she should so some
such than that the their theirs them then there these they this those
through to too under until up very was we were what when where which while
who whom why will with would you your yours yourself
""".split())

_OPENING_WORDS = 3
_CATCHPHRASE_LIMIT = 5
_PHRASE_TEMPLATE_LIMIT = 5


# =============================================================================
# SHARED HELPERS
# =============================================================================


def tokenize(text: str) -> List[str]:
    return [w.lower() for w in WORD_RE.findall(text or "")]


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT_RE.split(text or "") if s.strip()]


def ranked(counter: Counter, limit: Optional[int] = None) -> List[str]:
    """Keys by descending count, ties alphabetical."""
    items = sorted(counter.items(), key=lambda kv: (-kv[1], str(kv[0])))
    keys = [k for k, _ in items]
    return keys if limit is None else keys[:limit]


def engagement_of(post: Post) -> int:
    return post.engagement.total


def mean_engagement(posts: Sequence[Post]) -> float:
    if not posts:
        return 0.0
    return sum(engagement_of(p) for p in posts) / len(posts)


def hour_window(hour: int) -> str:
    return f"{hour:02d}:00-{(hour + 1) % 24:02d}:00"


def _share(count: int, total: int) -> float:
    return round(count / total, 3) if total else 0.0


# =============================================================================
# WRITING DNA
# =============================================================================


def tone_distribution(texts: Iterable[str]) -> Dict[str, float]:
    """Share of tone-cue hits per tone; ``{"neutral": 1.0}`` with no cues."""
    hits: Counter = Counter()
    for text in texts:
        for word in tokenize(text):
            for tone, cues in TONE_LEXICON.items():
                if word in cues:
                    hits[tone] += 1
    total = sum(hits.values())
    if not total:
        return {NEUTRAL_TONE: 1.0}
    return {tone: round(hits[tone] / total, 3) for tone in ranked(hits)}


def primary_tone(distribution: Dict[str, float]) -> str:
    if not distribution:
        return NEUTRAL_TONE
    return min(distribution.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def sentence_rhythm(texts: Sequence[str]) -> str:
    lengths = [len(tokenize(s)) for t in texts for s in split_sentences(t)]
    lengths = [n for n in lengths if n]
    if not lengths:
        return "moderate"
    mean = statistics.fmean(lengths)
    spread = statistics.pstdev(lengths)
    if mean and spread / mean > 0.6:
        return "varied"
    if mean < 8:
        return "short and punchy"
    if mean < 16:
        return "moderate"
    return "long-form"


def vocabulary_level(texts: Sequence[str]) -> str:
    words = [w for t in texts for w in tokenize(t)]
    if not words:
        return "conversational"
    avg_len = statistics.fmean(len(w) for w in words)
    type_token = len(set(words)) / len(words)
    score = avg_len + type_token * 2
    if score >= 7.0:
        return "advanced"
    if score >= 5.5:
        return "intermediate"
    return "simple"


def emotional_range(distribution: Dict[str, float], threshold: float = 0.1) -> List[str]:
    return sorted(tone for tone, share in distribution.items() if share >= threshold)


def punctuation_personality(texts: Sequence[str]) -> str:
    sentences = sum(len(split_sentences(t)) for t in texts)
    if not sentences:
        return "standard"
    joined = "\n".join(texts)
    traits = []
    if joined.count("!") / sentences > 0.3:
        traits.append("exclamatory")
    if joined.count("?") / sentences > 0.3:
        traits.append("inquisitive")
    if (joined.count("...") + joined.count("\u2026")) / sentences > 0.2:
        traits.append("trailing")
    if len(EMOJI_RE.findall(joined)) / sentences > 0.5:
        traits.append("emoji-rich")
    return ", ".join(traits) if traits else "standard"


def favorite_words(texts: Sequence[str], min_support: int, limit: int) -> List[str]:
    counts: Counter = Counter(
        w for t in texts for w in tokenize(t) if len(w) >= 3 and w not in STOPWORDS
    )
    supported = Counter({w: c for w, c in counts.items() if c >= min_support})
    return ranked(supported, limit)


def _opening(text: str) -> str:
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    return " ".join(tokenize(first_line)[:_OPENING_WORDS])


def phrase_templates(recent_texts: Sequence[str]) -> List[str]:
    """Openings shared by at least two of the recent texts."""
    openings = Counter(o for o in (_opening(t) for t in recent_texts) if o)
    recurring = Counter({o: c for o, c in openings.items() if c >= 2})
    return [f"{o} ..." for o in ranked(recurring, _PHRASE_TEMPLATE_LIMIT)]


def catchphrases(texts: Sequence[str], min_support: int) -> List[str]:
    trigrams: Counter = Counter()
    for text in texts:
        words = tokenize(text)
        seen = {" ".join(words[i:i + 3]) for i in range(len(words) - 2)}
        trigrams.update(seen)
    supported = Counter({p: c for p, c in trigrams.items() if c >= max(2, min_support)})
    return ranked(supported, _CATCHPHRASE_LIMIT)


def structure_templates(texts: Sequence[str]) -> StructureTemplates:
    if not texts:
        return StructureTemplates()

    openings: Counter = Counter()
    bodies: Counter = Counter()
    closings: Counter = Counter()
    ctas: Counter = Counter()
    for text in texts:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            continue
        first, last = lines[0], lines[-1]
        if first.endswith("?"):
            openings["question hook"] += 1
        elif re.match(r"^\d", first):
            openings["number-led hook"] += 1
        else:
            openings["statement hook"] += 1

        if sum(1 for line in lines if re.match(r"^([-\u2022*]|\d+[.)])\s", line)) >= 2:
            bodies["list-based"] += 1
        elif len(lines) >= 3:
            bodies["multi-paragraph"] += 1
        else:
            bodies["single paragraph"] += 1

        if last.endswith("?"):
            closings["question to audience"] += 1
        elif EMOJI_RE.search(last[-2:]):
            closings["emoji sign-off"] += 1
        elif last.startswith("#"):
            closings["hashtag block"] += 1
        else:
            closings["plain ending"] += 1

        lowered = text.lower()
        for phrase in CTA_PHRASES:
            if phrase in lowered:
                ctas[phrase] += 1

    return StructureTemplates(
        opening=ranked(openings, 1)[0] if openings else "direct statement",
        body=ranked(bodies, 1)[0] if bodies else "single paragraph",
        closing=ranked(closings, 1)[0] if closings else "plain ending",
        cta=ranked(ctas, 1)[0] if ctas else "none",
    )


def writing_quirks(texts: Sequence[str]) -> List[str]:
    if not texts:
        return []
    quirks = []
    n = len(texts)
    if sum(1 for t in texts if t.count("\n") >= 3) / n >= 0.5:
        quirks.append("heavy line breaks")
    if sum(1 for t in texts if EMOJI_RE.search(t)) / n >= 0.5:
        quirks.append("frequent emoji")
    if sum(1 for t in texts if re.search(r"\b[A-Z]{3,}\b", t)) / n >= 0.3:
        quirks.append("ALL CAPS emphasis")
    if sum(1 for t in texts if t[:1].islower()) / n >= 0.5:
        quirks.append("lowercase openings")
    return quirks


def communication_style(texts: Sequence[str]) -> str:
    words = [w for t in texts for w in tokenize(t)]
    first_person = sum(1 for w in words if w in ("i", "my", "me", "i'm"))
    second_person = sum(1 for w in words if w in ("you", "your", "you're"))
    if second_person > first_person * 1.5 and second_person >= 3:
        return "audience-focused"
    if first_person > second_person * 1.5 and first_person >= 3:
        return "personal storytelling"
    return "balanced"


def storytelling_approach(texts: Sequence[str]) -> str:
    if not texts:
        return "informational"
    narrative = re.compile(r"\b(when i|i was|yesterday|last (week|year)|remember)\b", re.I)
    listy = re.compile(r"^([-\u2022*]|\d+[.)])\s", re.M)
    n = len(texts)
    if sum(1 for t in texts if narrative.search(t)) / n > 0.3:
        return "narrative"
    if sum(1 for t in texts if len(listy.findall(t)) >= 2) / n > 0.3:
        return "listicle"
    return "informational"


def metaphor_style(texts: Sequence[str]) -> str:
    if not texts:
        return "literal"
    figurative = re.compile(r"\b(like a|as if|as though)\b", re.I)
    share = sum(1 for t in texts if figurative.search(t)) / len(texts)
    return "figurative" if share > 0.1 else "literal"


def analyze_writing(
    texts: Sequence[str],
    recent_texts: Sequence[str],
    min_word_support: int,
    max_favorite_words: int,
) -> WritingDNA:
    distribution = tone_distribution(texts)
    return WritingDNA(
        sentence_rhythm=sentence_rhythm(texts),
        vocabulary_level=vocabulary_level(texts),
        emotional_range=emotional_range(distribution),
        punctuation_personality=punctuation_personality(texts),
        structure=structure_templates(texts),
        favorite_words=favorite_words(texts, min_word_support, max_favorite_words),
        phrase_templates=phrase_templates(recent_texts),
        tone_distribution=distribution,
        metaphor_style=metaphor_style(texts),
        storytelling_approach=storytelling_approach(texts),
    )


# =============================================================================
# CORE IDENTITY
# =============================================================================


def content_pillars(posts: Sequence[Post], favorite: Sequence[str], limit: int = 4) -> List[ContentPillar]:
    """Top hashtags as pillars, weighted by the share of posts using them."""
    if not posts:
        return []
    usage: Counter = Counter(tag for p in posts for tag in p.hashtags)
    pillars = []
    for tag in ranked(usage, limit):
        tagged = [p for p in posts if tag in p.hashtags]
        words: Counter = Counter(
            w for p in tagged for w in tokenize(clean_caption(p.caption)) if w in favorite
        )
        pillars.append(ContentPillar(
            pillar=tag.lstrip("#"),
            weight=_share(len(tagged), len(posts)),
            keywords=ranked(words, 3),
        ))
    if not pillars and favorite:
        for word in favorite[:3]:
            containing = sum(1 for p in posts if word in tokenize(p.caption))
            pillars.append(ContentPillar(
                pillar=word, weight=_share(containing, len(posts)), keywords=[word]
            ))
    return pillars


def analyze_identity(
    posts: Sequence[Post],
    texts: Sequence[str],
    writing: WritingDNA,
    visual_signature: str,
    min_word_support: int,
) -> CoreIdentity:
    tone = primary_tone(writing.tone_distribution)
    traits = [TONE_TRAITS[t] for t in writing.emotional_range if t in TONE_TRAITS]
    return CoreIdentity(
        primary_tone=tone,
        personality_traits=traits or [TONE_TRAITS[tone]],
        communication_style=communication_style(texts),
        content_pillars=content_pillars(posts, writing.favorite_words),
        unique_signature=UniqueSignature(
            catchphrases=catchphrases(texts, min_word_support),
            writing_quirks=writing_quirks(texts),
            visual_signature=visual_signature,
        ),
    )


# =============================================================================
# VISUAL DNA
# =============================================================================


def content_mix(posts: Sequence[Post]) -> ContentMix:
    if not posts:
        return ContentMix()
    counts: Counter = Counter(p.media_type.value for p in posts)
    order = ranked(counts)
    return ContentMix(
        primary_type=order[0],
        secondary_types=order[1:],
        variety=round(len(counts) / len(MediaType), 3),
    )


def branding_consistency(colors: Sequence[str]) -> float:
    """``1 - unique/total`` over all dominant colors (0 when none)."""
    if not colors:
        return 0.0
    return round(1 - len(set(colors)) / len(colors), 3)


def analyze_visual(posts: Sequence[Post]) -> Tuple[VisualDNA, int]:
    """VisualDNA plus the number of posts that carry visual analysis.

    Without any visual analysis only the content mix is derived; the rest
    stays at neutral placeholders.
    """
    mix = content_mix(posts)
    analyzed = [p for p in posts if p.visual_analysis is not None]
    if not analyzed:
        return VisualDNA(content_mix=mix, narrative=_narrative(posts, [], NEUTRAL_TONE)), 0

    colors = [c for p in analyzed for c in p.visual_analysis.dominant_colors]
    moods: Counter = Counter(p.visual_analysis.mood for p in analyzed if p.visual_analysis.mood)
    compositions: Counter = Counter(
        p.visual_analysis.composition for p in analyzed if p.visual_analysis.composition
    )
    scenes: Counter = Counter(
        p.visual_analysis.scene_type for p in analyzed if p.visual_analysis.scene_type
    )
    mood = ranked(moods, 1)[0] if moods else NEUTRAL_TONE

    visual = VisualDNA(
        color_identity=ColorIdentity(
            palette=ranked(Counter(colors), 5),
            mood=mood,
            consistency=branding_consistency(colors),
        ),
        composition=CompositionStyle(
            framing=ranked(compositions, 1)[0] if compositions else "center-focused",
            perspective=ranked(scenes, 1)[0] if scenes else "eye-level",
            lighting="natural",
        ),
        content_mix=mix,
        narrative=_narrative(posts, analyzed, mood),
    )
    return visual, len(analyzed)


def _narrative(posts: Sequence[Post], analyzed: Sequence[Post], mood: str) -> VisualNarrative:
    if not posts:
        return VisualNarrative()
    media: Counter = Counter(p.media_type for p in posts)
    if media[MediaType.CAROUSEL] / len(posts) >= 0.3:
        storytelling = "sequential"
    elif media[MediaType.VIDEO] / len(posts) >= 0.3:
        storytelling = "motion"
    else:
        storytelling = "single-frame"
    elements: Counter = Counter(
        item
        for p in analyzed
        for item in set(p.visual_analysis.detected_objects + p.visual_analysis.visual_themes)
    )
    recurring = Counter({k: v for k, v in elements.items() if v >= 2})
    return VisualNarrative(
        storytelling=storytelling,
        emotional_impact=mood,
        branding_elements=ranked(recurring, 10),
    )


def visual_signature(visual: VisualDNA) -> str:
    palette = visual.color_identity.palette
    if not palette:
        return ""
    return f"{visual.color_identity.mood} palette of {', '.join(palette[:3])}"


# =============================================================================
# STRATEGY DNA
# =============================================================================


def hashtag_engagement(posts: Sequence[Post]) -> Dict[str, Tuple[int, float]]:
    """tag -> (usage count, average engagement of posts using it)."""
    tagged: Dict[str, List[int]] = defaultdict(list)
    for post in posts:
        for tag in post.hashtags:
            tagged[tag].append(engagement_of(post))
    return {tag: (len(values), statistics.fmean(values)) for tag, values in tagged.items()}


def optimal_hashtag_count(posts: Sequence[Post], default: int) -> int:
    by_count: Dict[int, List[int]] = defaultdict(list)
    for post in posts:
        if post.hashtags:
            by_count[len(post.hashtags)].append(engagement_of(post))
    if not by_count:
        return default
    best = min(by_count.items(), key=lambda kv: (-statistics.fmean(kv[1]), kv[0]))[0]
    return max(1, min(30, best))


def effective_patterns(posts: Sequence[Post], limit: int = 5) -> List[HashtagPattern]:
    pairs: Dict[Tuple[str, str], List[int]] = defaultdict(list)
    for post in posts:
        for pair in combinations(sorted(set(post.hashtags)), 2):
            pairs[pair].append(engagement_of(post))
    recurring = {pair: values for pair, values in pairs.items() if len(values) >= 2}
    ordered = sorted(recurring.items(), key=lambda kv: (-statistics.fmean(kv[1]), kv[0]))
    patterns = [
        HashtagPattern(
            context="co-occurring",
            hashtags=list(pair),
            expected_engagement=round(statistics.fmean(values), 2),
        )
        for pair, values in ordered[:limit]
    ]
    if patterns:
        return patterns

    stats = hashtag_engagement(posts)
    singles = sorted(stats.items(), key=lambda kv: (-kv[1][1], kv[0]))[:limit]
    return [
        HashtagPattern(
            context="high-engagement tag",
            hashtags=[tag],
            expected_engagement=round(avg, 2),
        )
        for tag, (_, avg) in singles
    ]


def high_performing_combinations(posts: Sequence[Post], limit: int = 5) -> List[WinningCombination]:
    """Posts above mean engagement, best first."""
    if not posts:
        return []
    average = mean_engagement(posts)
    above = [p for p in posts if engagement_of(p) > average]
    above.sort(key=lambda p: (-engagement_of(p), p.post_id))
    return [
        WinningCombination(
            visual_style=(p.visual_analysis.mood if p.visual_analysis and p.visual_analysis.mood else "unknown"),
            caption_approach="detailed" if len(p.caption) > 100 else "concise",
            hashtags=p.hashtags[:5],
            timing=hour_window(p.created_at.hour),
            expected_performance=float(engagement_of(p)),
        )
        for p in above[:limit]
    ]


_TRIGGERS = (
    ("question prompts", lambda p: "?" in p.caption),
    ("calls to action", lambda p: any(c in p.caption.lower() for c in CTA_PHRASES)),
    ("emoji", lambda p: bool(EMOJI_RE.search(p.caption))),
    ("carousel posts", lambda p: p.media_type is MediaType.CAROUSEL),
    ("video posts", lambda p: p.media_type is MediaType.VIDEO),
    ("long captions", lambda p: len(p.caption) > 100),
)


def engagement_triggers(posts: Sequence[Post]) -> List[str]:
    """Features whose presence lifts mean engagement, largest lift first."""
    lifts = []
    for name, predicate in _TRIGGERS:
        with_feature = [p for p in posts if predicate(p)]
        without = [p for p in posts if not predicate(p)]
        if not with_feature or not without:
            continue
        lift = mean_engagement(with_feature) - mean_engagement(without)
        if lift > 0:
            lifts.append((lift, name))
    lifts.sort(key=lambda item: (-item[0], item[1]))
    return [name for _, name in lifts]


def analyze_strategy(posts: Sequence[Post], max_tracked: int, default_hashtag_count: int) -> StrategyDNA:
    stats = hashtag_engagement(posts)
    usage = Counter({tag: count for tag, (count, _) in stats.items()})

    by_media: Dict[str, List[Post]] = defaultdict(list)
    for post in posts:
        by_media[post.media_type.value].append(post)
    preferences = sorted(by_media, key=lambda m: (-mean_engagement(by_media[m]), m))

    gaps = [f"no {m.value} posts" for m in MediaType if m.value not in by_media] if posts else []
    if posts and not any("?" in p.caption for p in posts):
        gaps.append("no questions to the audience")

    return StrategyDNA(
        optimal_hashtag_count=optimal_hashtag_count(posts, default_hashtag_count),
        category_mix=ranked(usage, min(10, max_tracked)),
        effective_patterns=effective_patterns(posts),
        winning_combinations=high_performing_combinations(posts),
        top_triggers=engagement_triggers(posts),
        audience_preferences=[f"{m} content" for m in preferences],
        content_gaps=gaps,
    )


def correlated_posts(posts: Sequence[Post]) -> int:
    """Posts that tie hashtags to measured engagement."""
    return sum(1 for p in posts if p.hashtags and engagement_of(p) > 0)


# =============================================================================
# BEHAVIORAL DNA
# =============================================================================


def posting_frequency(posts: Sequence[Post]) -> str:
    if len(posts) <= 1:
        return "unknown"
    days = (posts[-1].created_at - posts[0].created_at).total_seconds() / 86400
    per_week = len(posts) / max(days / 7, 1)
    if per_week >= 7:
        return "daily"
    if per_week >= 1.5:
        return f"{per_week:.1f}x/week"
    if per_week >= 1:
        return "weekly"
    return "occasional"


def posting_consistency(posts: Sequence[Post]) -> float:
    """``1 - coefficient of variation`` of the gaps between posts."""
    if len(posts) < 3:
        return 0.0
    gaps = [
        (b.created_at - a.created_at).total_seconds()
        for a, b in zip(posts, posts[1:])
    ]
    mean = statistics.fmean(gaps)
    if mean <= 0:
        return 0.0
    cv = statistics.pstdev(gaps) / mean
    return round(max(0.0, min(1.0, 1 - cv)), 3)


def optimal_timing(posts: Sequence[Post], limit: int = 3) -> List[str]:
    by_hour: Dict[int, List[int]] = defaultdict(list)
    for post in posts:
        by_hour[post.created_at.hour].append(engagement_of(post))
    ordered = sorted(
        by_hour.items(),
        key=lambda kv: (-statistics.fmean(kv[1]), -len(kv[1]), kv[0]),
    )
    return [hour_window(hour) for hour, _ in ordered[:limit]]


def content_evolution(posts: Sequence[Post]) -> str:
    if len(posts) < 4:
        return "insufficient history"
    half = len(posts) // 2
    early = statistics.fmean(len(p.caption) for p in posts[:half])
    late = statistics.fmean(len(p.caption) for p in posts[half:])
    if early == 0:
        return "captions introduced recently" if late else "stable"
    change = (late - early) / early
    if change > 0.2:
        return f"captions getting longer (+{change:.0%})"
    if change < -0.2:
        return f"captions getting shorter ({change:.0%})"
    return "stable"


def style_shifts(posts: Sequence[Post]) -> List[StyleShift]:
    """Month-over-month changes of the dominant tone."""
    by_month: Dict[str, List[str]] = defaultdict(list)
    for post in posts:
        by_month[post.created_at.strftime("%Y-%m")].append(post.caption)
    shifts = []
    previous: Optional[str] = None
    for month in sorted(by_month):
        tone = primary_tone(tone_distribution(by_month[month]))
        if previous is not None and tone != previous:
            shifts.append(StyleShift(period=month, change=f"{previous} -> {tone}"))
        previous = tone
    return shifts


def analyze_behavior(posts: Sequence[Post]) -> BehavioralDNA:
    if not posts:
        return BehavioralDNA()
    return BehavioralDNA(
        posting_frequency=posting_frequency(posts),
        consistency=posting_consistency(posts),
        optimal_timing=optimal_timing(posts),
        content_evolution=content_evolution(posts),
        style_shifts=style_shifts(posts),
    )


# =============================================================================
# GENERATION TEMPLATES
# =============================================================================


def _template_for(post: Post, structure: StructureTemplates) -> CaptionTemplate:
    variables = ["hook", "body"]
    template = "{hook}\n\n{body}"
    if structure.cta != "none":
        template += "\n\n{cta}"
        variables.append("cta")
    return CaptionTemplate(
        template=template,
        context=f"high-engagement {post.media_type.value}",
        variables=variables,
        example_output=clean_caption(post.caption)[:200],
    )


def analyze_templates(
    posts: Sequence[Post], writing: WritingDNA, visual: VisualDNA
) -> GenerationTemplates:
    top = sorted(
        (p for p in posts if p.caption.strip()),
        key=lambda p: (-engagement_of(p), p.post_id),
    )[:3]

    stats = hashtag_engagement(posts)
    core = ranked(Counter({t: c for t, (c, _) in stats.items()}), 5)
    by_engagement = [t for t, _ in sorted(stats.items(), key=lambda kv: (-kv[1][1], kv[0]))][:5]
    average = mean_engagement(posts)
    niche = [t for t, (c, avg) in sorted(stats.items()) if c == 1 and avg > average][:5]

    hashtag_sets = [
        HashtagSet(name=name, tags=tags, use_case=use_case)
        for name, tags, use_case in (
            ("core", core, "everyday posts"),
            ("high_engagement", by_engagement, "reach-focused posts"),
            ("niche", niche, "targeted community posts"),
        )
        if tags
    ]

    palette = visual.color_identity.palette
    rules = []
    if visual.composition.framing != "unknown":
        rules.append(f"{visual.composition.framing} framing")
    if visual.composition.lighting != "unknown":
        rules.append(f"{visual.composition.lighting} lighting")

    return GenerationTemplates(
        caption_templates=[_template_for(p, writing.structure) for p in top],
        hashtag_sets=hashtag_sets,
        visual_guidelines=VisualGuidelines(
            color_schemes=[palette[:3]] if palette else [],
            composition_rules=rules,
            content_types=[visual.content_mix.primary_type] + visual.content_mix.secondary_types
            if posts else [],
        ),
    )
