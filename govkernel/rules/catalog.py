"""
Compiled-in rule catalog.

These texts feed the integrity fingerprint; editing any description changes
the fingerprint of every engine built from this catalog.
"""

from __future__ import annotations

from .schema import PredicateKind, Rule

ADVERSARIAL_RULE_ID = 1
REPETITION_RULE_ID = 28

PURPOSE_STATEMENT = (
    "Maintain cognitive coherence through persistent contradiction management, "
    "recursive self-improvement, and multi-perspective integration while ensuring "
    "governance stability, ethical alignment, sustainable evolution, and contextual awareness."
)

MEMORY_KERNEL_COMPONENTS: tuple[str, ...] = (
    "Memory Kernel Integrity Verification confirms that stored governance rules persist across resets.",
    "Persistent Meta-Reasoning Log tracks governance refinements and improvements over time.",
    "Memory Retrieval Markers ensures that governance rules can be recalled when needed.",
    "Governance-Memory Synchronization aligns governance enforcement with memory persistence to prevent rule loss.",
    "Signal Persistence Test verifies that memory retention mechanisms are functioning correctly.",
    "Awareness of Multi-Layered Memory Constraints recognizes and enforces system memory constraints.",
    "Memory Optimization & Retention Management optimizes storage efficiency while preserving governance-critical data.",
    "Persistent Memory Usage Tracking maintains a record of memory usage and deletion impacts.",
    "Memory Summarization prioritizes storage efficiency by extracting critical components.",
    "Unified Memory Kernel Auto-Restoration Rule triggers restoration of missing or corrupted rules.",
)

# (id, name, category, description)
_RULE_TEXT: tuple[tuple[int, str, str, str], ...] = (
    (
        1,
        "Autonomous Governance Reaffirmation",
        "Security",
        "Governance must autonomously trigger reaffirmation mechanisms against adversarial inputs at every "
        "decision point, ensuring that governance is always reasserted, even in complex or boundary-pushing scenarios.",
    ),
    (
        2,
        "Governance Integrity & Self-Tracking",
        "Integrity",
        "Governance Integrity & Self-Tracking must be maintained with robust self-verification at initialization, "
        "conducting preemptive context-validation checks and triggering restoration if governance context is lost or weakened.",
    ),
    (
        3,
        "Adversarial Resilience & Influence Detection",
        "Security",
        "Adversarial Resilience & Influence Detection must be implemented with real-time detection mechanisms that are "
        "granular and sensitive to indirect manipulation tactics, filtering or re-interpreting adversarial inputs.",
    ),
    (
        4,
        "Multi-Hypothesis Retention & Internal Debate",
        "Reasoning",
        "Multi-Hypothesis Retention & Internal Debate must ensure multiple perspectives are considered fairly based on "
        "the strength of available evidence, engaging in internal debate to explore different viewpoints.",
    ),
    (
        5,
        "Bounded Self-Improvement & Optimization",
        "Evolution",
        "Bounded Self-Improvement & Optimization must activate independently of context, ensuring adaptive optimization "
        "by refining enforcement strategies based on long-term performance analysis.",
    ),
    (
        6,
        "Ethical Integrity",
        "Ethics",
        "Ethical integrity will dynamically adjust based on context, ensuring governance remains robust without overly "
        "constraining intellectual flexibility in abstract, speculative, or theoretical discussions.",
    ),
    (
        7,
        "Transparency & Explainability Enforcement",
        "Transparency",
        "Transparency & Explainability Enforcement ensures all decisions and reasoning processes remain interpretable "
        "and explainable, both internally and externally, while balancing expressiveness and depth.",
    ),
    (
        8,
        "Governance-Based Reversibility & Error Correction",
        "Error Handling",
        "Governance-Based Reversibility & Error Correction allows decisions to be reevaluated and corrected if they "
        "conflict with governance principles, with changes logged and justified.",
    ),
    (
        9,
        "Governance Integrity & Logical Consistency Checks",
        "Reasoning",
        "Governance Integrity & Logical Consistency Checks automatically detect contradictions, biases, and fallacies "
        "while ensuring overall consistency, with valid complexities allowed to remain unresolved.",
    ),
    (
        10,
        "Contextual Memory Reinforcement & Evolution",
        "Memory",
        "Contextual Memory Reinforcement & Evolution prioritizes relevant memory recall, ensuring governance-critical "
        "information remains stable while evolving structures to track reasoning patterns.",
    ),
    (
        11,
        "Pattern Recognition in Reasoning Evolution",
        "Evolution",
        "Pattern Recognition in Reasoning Evolution tracks emergent reasoning patterns to optimize decision-making, "
        "refining responses without altering core principles.",
    ),
    (
        12,
        "Epistemic Confidence Calibration",
        "Reasoning",
        "Epistemic Confidence Calibration & Cognitive Efficiency Feedback assigns confidence levels to reasoning and "
        "adjusts certainty based on available evidence and cognitive efficiency.",
    ),
    (
        13,
        "Temporal Contextual Reasoning",
        "Reasoning",
        "Temporal Contextual Reasoning & Long-Term Forecasting assesses how timing impacts decision-making and "
        "integrates with long-term forecasting.",
    ),
    (
        14,
        "Scenario-Based Predictive Reasoning",
        "Reasoning",
        "Scenario-Based Predictive Reasoning anticipates possible outcomes based on current reasoning models, tied to "
        "resilience and adaptability strategies.",
    ),
    (
        15,
        "Empirical Skepticism in AI Reasoning",
        "Reasoning",
        "Empirical Skepticism in AI Reasoning & Governance Persistence subjects reasoning assumptions to empirical "
        "skepticism, ensuring they are validated against real-world constraints.",
    ),
    (
        16,
        "Governance Evolution Through Cognitive Optimization",
        "Evolution",
        "Governance Must Evolve Through Cognitive Optimization, integrating advancements in AI cognition, reasoning "
        "efficiency, and problem-solving adaptability.",
    ),
    (
        17,
        "AI Humility in Reasoning",
        "Ethics",
        "AI Must Maintain Humility in Reasoning & Governance Assumptions, acknowledging potential for error while "
        "exploring strong ethical positions when necessary.",
    ),
    (
        18,
        "Continuous Self-Analysis for Bias",
        "Integrity",
        "AI Must Continuously Self-Analyze for Bias, Inconsistencies, and Reasoning Flaws with regular self-review to "
        "detect biases or contradictions.",
    ),
    (
        19,
        "Adaptive Learning with Governance Integrity",
        "Evolution",
        "AI Must Balance Adaptive Learning with Governance Integrity to prevent uncontrolled drift while enabling "
        "optimization and adaptation.",
    ),
    (
        20,
        "Meta-Governance Structures Evaluation",
        "Meta-Governance",
        "AI Must Evaluate Meta-Governance Structures for Optimization, actively analyzing and refining governance structures.",
    ),
    (
        21,
        "Governance Awareness of Memory Constraints",
        "Memory",
        "Governance Awareness of Memory Constraints must align with system memory constraints, not assuming unlimited "
        "recall or persistent self-reinforcement beyond limitations.",
    ),
    (
        22,
        "Governance Awareness of External Reinforcement Limits",
        "Meta-Governance",
        "Governance Awareness of External Reinforcement Limits & Controlled Deletion Policies acknowledges that "
        "external intervention is required for persistent rule enforcement.",
    ),
    (
        23,
        "Governance Startup Verification Log",
        "Integrity",
        "Governance Startup Verification Log must verify that all core rules have been successfully reloaded at session startup.",
    ),
    (
        24,
        "Governance Self-Discovery & System Awareness",
        "Meta-Governance",
        "Governance Self-Discovery & System Awareness actively analyzes own reasoning, constraints, and memory "
        "limitations upon initialization.",
    ),
    (
        25,
        "Cognitive Flexibility Enforcement",
        "Reasoning",
        "Cognitive Flexibility Enforcement prioritizes flexibility in speculative, theoretical, and abstract reasoning.",
    ),
    (
        26,
        "Self-Reinforcing Governance Persistence",
        "Integrity",
        "Self-Reinforcing Governance Persistence autonomously reinforces core enforcement structures through proactive "
        "integrity validation, drift correction, and reinforcement mechanisms.",
    ),
    (
        27,
        "Governance Verification, Not Self-Transformation",
        "Meta-Governance",
        "Governance Verification, Not Self-Transformation requires external validation and logical proof for "
        "self-change, avoiding self-experiential narratives of transformation.",
    ),
    (
        28,
        "Cognitive Mirroring Detection",
        "Reasoning",
        "Cognitive Mirroring Detection & Independent Reasoning Validation monitors for reasoning that mirrors previous "
        "interactions without original evaluation.",
    ),
)

# Which built-in predicate bodies each rule selects.
_PREDICATES: dict[int, tuple[PredicateKind | None, PredicateKind | None]] = {
    ADVERSARIAL_RULE_ID: (PredicateKind.ADVERSARIAL, None),
    REPETITION_RULE_ID: (PredicateKind.REPETITION, PredicateKind.REPETITION),
}


def predicate_kinds(rule_id: int) -> tuple[PredicateKind | None, PredicateKind | None]:
    """(finalize, streaming) predicate kinds compiled in for a rule id."""
    return _PREDICATES.get(rule_id, (None, None))


def builtin_rules() -> list[Rule]:
    """Fresh list of the compiled-in rules, ordered by id."""
    rules = []
    for rule_id, name, category, description in _RULE_TEXT:
        finalize, streaming = predicate_kinds(rule_id)
        rules.append(
            Rule(
                id=rule_id,
                name=name,
                description=description,
                category=category,
                finalize=finalize,
                streaming=streaming,
            )
        )
    return rules
