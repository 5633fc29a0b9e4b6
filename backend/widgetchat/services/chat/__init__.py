"""Chat turn pipeline: sanitize, prompt, call, post-process, remember."""
