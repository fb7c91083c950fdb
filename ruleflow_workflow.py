# ruleflow_workflow.py
# Read-mapping pipeline from the workflow lessons: trim -> map -> sort -> count.
from __future__ import annotations

from ruleflow import config_value, expand, from_wildcards, temp

config = workflow.configfile("config.yaml")

workflow.rule(
    "all",
    input=expand("results/counts/{sample}.txt", sample=config["samples"]),
)

workflow.rule(
    "trim",
    input={"r1": "data/reads/{sample}_1.fq", "r2": "data/reads/{sample}_2.fq"},
    output={"r1": "results/trimmed/{sample}_1.fq", "r2": "results/trimmed/{sample}_2.fq"},
    params={"quality": config_value("min_quality", default=20)},
    shell="fastp -q {params.quality} -i {input.r1} -I {input.r2} -o {output.r1} -O {output.r2}",
)

workflow.rule(
    "map_reads",
    input={
        "ref": config["genome"],
        "r1": "results/trimmed/{sample}_1.fq",
        "r2": "results/trimmed/{sample}_2.fq",
    },
    output=temp("results/mapped/{sample}.sam"),
    params={"rg": from_wildcards(lambda w: f"@RG\\tID:{w.sample}\\tSM:{w.sample}")},
    threads=config.get("threads_per_job", 1),
    shell="bwa mem -t {threads} -R '{params.rg}' {input.ref} {input.r1} {input.r2} > {output}",
)

workflow.rule(
    "sort_bam",
    input="results/mapped/{sample}.sam",
    output="results/sorted/{sample}.bam",
    shell="samtools sort -o {output} {input}",
)

workflow.rule(
    "count",
    input="results/sorted/{sample}.bam",
    output="results/counts/{sample}.txt",
    message="Counting mapped reads",
    shell="samtools view -c -F 4 {input} > {output}",
)
